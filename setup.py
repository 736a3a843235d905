from setuptools import setup


setup(
    name="import-doctor",
    version="0.1.0",
    description="Local validation, type coercion and reference lookups for tabular data imports",
    packages=["import_doctor", "import_doctor.rules"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "import-doctor=import_doctor.cli:main",
        ]
    },
)
