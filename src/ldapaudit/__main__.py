import sys

from ldapaudit.cli import main

sys.exit(main())
