from .config_spec import *
from .entity import *
