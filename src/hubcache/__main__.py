import sys

from hubcache.cli.main import main

sys.exit(main())
