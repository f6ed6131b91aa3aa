"""Compatibility shim for legacy installation workflows.

prisma-convert is configured through ``pyproject.toml``. Running this file
directly only prints a hint, but build front-ends such as ``pip`` may still
import it to generate package metadata.
"""

from __future__ import annotations

import sys

from setuptools import setup


def main() -> None:
    message = (
        "prisma-convert uses pyproject.toml-based builds. "
        "Run 'pip install -e .' (or 'pip install -e .[test]') instead."
    )

    if len(sys.argv) == 1:
        print(message)
        sys.exit(0)

    print(message)
    setup()


if __name__ == "__main__":
    main()
