#!/usr/bin/env python3
"""Run the storefront checkout CLI"""

import sys
from storefront_checkout.cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        print(f"Checkout error: {e}", file=sys.stderr)
        sys.exit(1)
