from .geometry import *
from .interpolation import *
from .environment import *
from .ray_objects import *
from .eigenrays import *
from .proploss import *
from .wave_queue import *

__version__ = '0.1.0'
