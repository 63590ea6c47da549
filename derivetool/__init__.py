"""derivetool - derive patterns (Display, Error, From, Wrapper, Getters) for Python type definitions"""

__version__ = "0.1.0"
