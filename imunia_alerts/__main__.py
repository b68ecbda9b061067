import sys

from imunia_alerts.main import main

sys.exit(main())
