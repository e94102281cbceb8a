import sys

from openpaw.main import main

sys.exit(main())
