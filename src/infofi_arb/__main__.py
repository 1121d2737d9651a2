"""Allow running as: python -m infofi_arb"""
from infofi_arb.main import cli_main

if __name__ == "__main__":
    cli_main()
