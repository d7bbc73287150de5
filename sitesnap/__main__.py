import sys

from sitesnap.main import main

sys.exit(main())
