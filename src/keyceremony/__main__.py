"""Allow ``python -m keyceremony``."""

from keyceremony.cli import main

raise SystemExit(main())
