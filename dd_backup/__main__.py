import sys

from dd_backup.main import main


sys.exit(main())
