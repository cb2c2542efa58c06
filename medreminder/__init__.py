# medreminder/__init__.py
import os

# Kivy parses sys.argv on import unless told not to.
os.environ.setdefault("KIVY_NO_ARGS", "1")

__version__ = "1.0.0"
