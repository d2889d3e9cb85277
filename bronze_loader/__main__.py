import sys

from bronze_loader.main import main

sys.exit(main())
