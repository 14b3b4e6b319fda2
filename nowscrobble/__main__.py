import sys

from nowscrobble.main import main

sys.exit(main())
