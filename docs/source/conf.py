import os
import sys

sys.path.insert(0, os.path.abspath("../.."))

project = "Campus Venue Booking"
copyright = "2026, Campus Venue Booking contributors"
author = "Campus Venue Booking contributors"
release = "0.3.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

templates_path = ["_templates"]
exclude_patterns: list[str] = []

html_theme = "sphinx_rtd_theme"
html_static_path = ["_static"]
