import sys

from stock_cli.inventory_audit import main

sys.exit(main())
