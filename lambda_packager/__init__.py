"""lambda-packager.

A small build utility that packages a compiled Linux executable, its shared
libraries and a ``bootstrap`` launcher into a zip for a custom serverless runtime.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
