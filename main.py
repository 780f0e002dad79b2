"""
FitGen Studio Watermark - Main Entry Point
==========================================
Provenance downloads and watermark audits from the command line.

Usage:
    python main.py download https://cdn.example.com/look-42.png --tier free --user-id u-1
    python main.py extract downloads/fitgen-look-42.png

Architecture:
    - Model: fitgen/core/ (pure watermark logic)
    - Workers: fitgen/workers/ (QThread async downloads and audits)
    - Controller: fitgen/cli.py (signal/slot connections, console output)
"""

from fitgen.cli import cli


def main():
    """Application entry point."""
    cli(prog_name="fitgen")


if __name__ == "__main__":
    main()
