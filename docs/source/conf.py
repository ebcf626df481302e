"""Sphinx configuration for knitro-jax documentation."""

import os
import sys

sys.path.insert(0, os.path.abspath("../.."))

project = "knitro-jax"
author = "knitro-jax developers"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.intersphinx",
    "sphinx.ext.viewcode",
    "sphinx_autodoc_typehints",
    "sphinx_copybutton",
    "myst_parser",
]

# pages are Markdown; API pages embed autodoc through {eval-rst}
source_suffix = {".md": "markdown"}
exclude_patterns = ["_build"]

html_theme = "furo"
html_title = "knitro-jax"

# docstrings are Google style
napoleon_numpy_docstring = False
napoleon_attr_annotations = True

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "show-inheritance": True,
}
autodoc_typehints = "description"

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable/", None),
    "scipy": ("https://docs.scipy.org/doc/scipy/", None),
    "equinox": ("https://docs.kidger.site/equinox/", None),
}

# strip doctest prompts from copied examples
copybutton_prompt_text = r">>> |\.\.\. "
copybutton_prompt_is_regexp = True
