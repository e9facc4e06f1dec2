import sys

from dronesim.app.main import main

sys.exit(main())
