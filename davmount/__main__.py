import sys

from davmount.main import main

sys.exit(main())
