"""Sphinx configuration."""

project = "SF File Flow"
author = "SF File Flow contributors"
copyright = "2025, SF File Flow contributors"
extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx_mermaid",
    "sphinx_click",
    "myst_parser",
]
autodoc_typehints = "description"
html_theme = "furo"
