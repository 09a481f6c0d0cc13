from setuptools import setup


setup(
    name="mara-doctor",
    version="0.3.0",
    description="Reconcile SAP MARA master-data exports against product lookups and check them for completeness",
    packages=["mara_doctor"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "mara-doctor=mara_doctor.cli:main",
        ]
    },
)
