from setuptools import setup


setup(
    name="customs-doctor",
    version="0.3.0",
    description="Merge and repair drifting customs declaration exports from freight forwarders",
    packages=["customs_doctor", "customs_doctor.heal_modules"],
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
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "customs-doctor=customs_doctor.cli:main",
        ]
    },
)
