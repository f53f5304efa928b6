import re
from pathlib import Path

from setuptools import setup

ROOT_DIR = Path(__file__).parent.resolve() / "app"

# Read the version without importing the package (and its dependencies).
_version_src = (ROOT_DIR / "nescore" / "__version__.py").read_text(encoding="utf-8")
_major, _minor, _patch, _stage, _build = re.search(
    r'__version__.*?=\s*\((\d+),\s*(\d+),\s*(\d+),\s*"(\w+)",\s*(\d+)\)', _version_src
).groups()
__version_string__ = f"{_major}.{_minor}.{_patch}" + (f"-{_stage}.{_build}" if _stage != "stable" else "")

setup(
    name="NESCore",
    version=__version_string__,
    packages=["nescore", "nescore.cartridge", "nescore.util"],
    package_dir={"nescore": "app/nescore"},
    python_requires=">=3.11",
    install_requires=[
        "numpy",
        "returns",
        "rich",
        "bitarray",
        "typing_extensions",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["nescore=nescore.__main__:main"]},
    include_package_data=True,
    zip_safe=False,
)
