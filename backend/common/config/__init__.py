"""Configuration module - re-exports all config values."""
from .paths import *
from .navigation import *
from .redis import *
from .server import *
