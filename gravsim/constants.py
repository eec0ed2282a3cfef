# bhgrav/gravsim/constants.py
"""
Body record layout and numerical constants shared by the trees, the force
evaluator and the integrators.
"""

# --- Body Record Layout (12 scalars per body) ---
BODY_STRIDE = 12
POS_SLICE = slice(0, 3)     # position x, y, z
VEL_SLICE = slice(4, 7)     # velocity x, y, z (slot 3 is padding)
ACC_SLICE = slice(8, 11)    # acceleration x, y, z (slot 7 is padding)
MASS_IDX = 11               # body mass
POS_X, POS_Y, POS_Z = 0, 1, 2
VEL_X, VEL_Y, VEL_Z = 4, 5, 6
ACC_X, ACC_Y, ACC_Z = 8, 9, 10
DEFAULT_BODY_MASS = 1.0

# --- Morton Keys (32-bit, 10 bits per axis) ---
MORTON_AXIS_BITS = 10
MORTON_AXIS_MAX = (1 << MORTON_AXIS_BITS) - 1
MAX_DENSE_DEPTH = 10        # levels 0..9; 8^9 cells at the deepest level

# --- Adaptive Cell Tree ---
NO_CHILD = -1
DEFAULT_MAX_TREE_DEPTH = 32
MIN_ARENA_CELLS = 64

# --- Dense Fill Modes ---
FILL_MODE_MASS = "mass"     # accumulate body mass
FILL_MODE_COUNT = "count"   # accumulate 1 per body
FILL_MODES = (FILL_MODE_MASS, FILL_MODE_COUNT)
