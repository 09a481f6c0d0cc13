#!/usr/bin/env python3
from __future__ import annotations

from pathlib import Path
from typing import Optional

import streamlit as st

from mara_doctor import completeness, reconcile
from mara_doctor.config import EngineConfig, setup_logging
from mara_doctor.lookup import HttpReferenceLookup, TableReferenceLookup
from mara_doctor.stats import stats_frame, workbook_stats
from mara_doctor.workbook_io import MODERN_WORKBOOK_FORMATS, load_workbook_bytes

MODE_RECONCILE = "Abgleich"
MODE_COMPLETENESS = "Vollständigkeit"
MODES = [MODE_RECONCILE, MODE_COMPLETENESS]
REFERENCE_EXTS = {".csv", ".txt", ".xlsx", ".xlsm", ".xls", ".ods"}
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def ensure_state() -> None:
    st.session_state.setdefault("processing", False)
    st.session_state.setdefault("job", None)
    st.session_state.setdefault("result", None)
    st.session_state.setdefault("lookup_url_input", "")


def output_filename(name: str, mode: str) -> str:
    stem = Path(name).stem or "export"
    suffix = "abgleich" if mode == MODE_RECONCILE else "qualitaet"
    return f"{stem}-{suffix}.xlsx"


def build_lookup(
    *,
    reference_name: Optional[str],
    reference_bytes: Optional[bytes],
    lookup_url: str,
    identifier_column: Optional[str],
    config: EngineConfig,
):
    if reference_bytes:
        suffix = Path(reference_name or "").suffix.lower()
        return TableReferenceLookup.from_bytes(reference_bytes, suffix, identifier_column=identifier_column or None)
    if lookup_url.strip():
        return HttpReferenceLookup(lookup_url.strip(), timeout=config.lookup_timeout)
    raise ValueError("Provide a reference table or a lookup URL.")


def process_job(job: dict) -> dict:
    """Run one upload through the selected engine; never raises."""
    result = {
        "name": job["name"],
        "mode": job["mode"],
        "status": "success",
        "messages": [],
        "download_bytes": None,
        "download_name": None,
        "stats": None,
    }
    config = job.get("config") or EngineConfig.from_env()
    try:
        if Path(job["name"]).suffix.lower() not in MODERN_WORKBOOK_FORMATS:
            raise ValueError(f"Unsupported format: {Path(job['name']).suffix or '[missing extension]'}")
        if job["mode"] == MODE_RECONCILE:
            lookup = build_lookup(
                reference_name=job.get("reference_name"),
                reference_bytes=job.get("reference_bytes"),
                lookup_url=job.get("lookup_url", ""),
                identifier_column=job.get("identifier_column"),
                config=config,
            )
            outcome = reconcile.reconcile_bytes(job["data"], lookup, config)
            if outcome.identifiers_requested and not outcome.identifiers_found:
                result["status"] = "warning"
                result["messages"].append("The reference lookup returned no data for any identifier.")
        else:
            outcome = completeness.check_completeness_bytes(job["data"], config)
    except ValueError as exc:
        result["status"] = "error"
        result["messages"].append(str(exc))
        return result
    result["download_bytes"] = outcome.workbook
    result["download_name"] = output_filename(job["name"], job["mode"])
    result["stats"] = workbook_stats(load_workbook_bytes(outcome.workbook))
    return result


def render_stats(stats: dict) -> None:
    frame = stats_frame(stats)
    if frame.empty:
        st.info("No data rows found.")
        return
    percentages = stats.get("percentages", {})
    if stats.get("kind") == "reconcile":
        metrics = st.columns(2)
        metrics[0].metric("Zeilen OK", f"{percentages.get('rows_ok', 0.0)} %")
        metrics[1].metric("Felder übereinstimmend", f"{percentages.get('fields_match', 0.0)} %")
    else:
        metrics = st.columns(2)
        metrics[0].metric("Vollständig", f"{percentages.get('rows_complete', 0.0)} %")
        metrics[1].metric("Unvollständig", f"{percentages.get('rows_incomplete', 0.0)} %")
    st.dataframe(frame.reset_index(), width="stretch", hide_index=True)


def render_result() -> None:
    result = st.session_state.get("result")
    if not result:
        return
    st.subheader("Ergebnis")
    for message in result["messages"]:
        if result["status"] == "error":
            st.error(message)
        else:
            st.warning(message)
    if result.get("stats"):
        render_stats(result["stats"])
    if result.get("download_bytes"):
        st.download_button(
            "Ergebnis herunterladen",
            data=result["download_bytes"],
            file_name=result["download_name"],
            mime=XLSX_MIME,
            width="stretch",
            key=f"download_{result['name']}",
        )


def main() -> None:
    st.set_page_config(page_title="mara-doctor", layout="wide", initial_sidebar_state="collapsed")
    setup_logging()
    ensure_state()

    st.title("mara-doctor")
    st.caption("MARA-Export hochladen, gegen Referenzdaten abgleichen oder auf Vollständigkeit prüfen.")

    processing = st.session_state["processing"]
    upload = st.file_uploader(
        "MARA-Export",
        type=[ext.lstrip(".") for ext in sorted(MODERN_WORKBOOK_FORMATS)],
        key="export_input",
        disabled=processing,
    )
    mode = st.radio("Prüfung", options=MODES, horizontal=True, key="mode_input", disabled=processing)
    reference = None
    identifier_column = ""
    if mode == MODE_RECONCILE:
        reference = st.file_uploader(
            "Referenztabelle",
            type=[ext.lstrip(".") for ext in sorted(REFERENCE_EXTS)],
            key="reference_input",
            disabled=processing,
        )
        identifier_column = st.text_input("Spalte mit A2V-Nummer (optional)", key="identifier_column_input", disabled=processing)
        st.text_input("oder Lookup-URL", key="lookup_url_input", disabled=processing or reference is not None)
    submit = st.button("Start", type="primary", width="stretch", disabled=processing or upload is None)

    if submit and upload is not None:
        st.session_state["job"] = {
            "name": upload.name,
            "data": upload.getvalue(),
            "mode": mode,
            "reference_name": reference.name if reference is not None else None,
            "reference_bytes": reference.getvalue() if reference is not None else None,
            "lookup_url": st.session_state.get("lookup_url_input", ""),
            "identifier_column": identifier_column.strip() or None,
        }
        st.session_state["result"] = None
        st.session_state["processing"] = True
        st.rerun()

    if st.session_state["processing"]:
        with st.spinner("Die Datei wird verarbeitet..."):
            st.session_state["result"] = process_job(st.session_state["job"])
        st.session_state["processing"] = False
        st.session_state["job"] = None
        st.rerun()

    render_result()


if __name__ == "__main__":
    main()
