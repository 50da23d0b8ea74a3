"""Allow ``python -m certpilot``."""

from certpilot.cli.main import main

main()
