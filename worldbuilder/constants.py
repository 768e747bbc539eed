"""Clamp ranges, palettes, and fixed numeric constants."""

# ── Input document limits ──────────────────────────────────────────
GROUND_SIZE_RANGE = (20.0, 400.0)
GROUND_GRID_RANGE = (16, 256)
HEIGHT_SCALE_RANGE = (0.0, 40.0)
NOISE_SCALE_RANGE = (0.5, 40.0)
FOG_DENSITY_RANGE = (0.0, 0.05)
ATMOSPHERE_RANGE = (0.5, 4.0)
SUN_SIZE_RANGE = (0.01, 1.0)
EMISSION_RANGE = (0.0, 10.0)
SEED_RANGE = (0, 2147483647)
MAX_WORLD_OBJECTS = 400
MAX_TAGS = 16

AVATAR_HEIGHT_RANGE = (0.5, 2.0)
DEFAULT_AVATAR_NAME = "Traveler"
DEFAULT_PRIMARY = "#00D1FF"
DEFAULT_SECONDARY = "#FFFFFF"

# ── Procedural resolution limits ───────────────────────────────────
CONE_SIDES_RANGE = (8, 64)
TORUS_MAJOR_RANGE = (12, 128)
TORUS_MINOR_RANGE = (8, 64)

# Index buffers switch to 32-bit above this vertex count
MAX_NARROW_VERTICES = 65535

# ── Terrain ────────────────────────────────────────────────────────
# Per-seed noise-space offsets; irrational-ish so seeds never land on
# the integer lattice where gradient noise is zero.
SEED_OFFSET_X = 0.6180339887
SEED_OFFSET_Z = 0.4142135624
# Fixed permutation table for gradient noise (never reseeded)
NOISE_PERMUTATION_SEED = 1337

# ── Camera framing ─────────────────────────────────────────────────
CAMERA_DISTANCE_FACTOR = 0.9
CAMERA_DISTANCE_RANGE = (12.0, 260.0)
CAMERA_ELEVATION_RATIO = 0.45

# ── Colors (RGBA, 0-1) ─────────────────────────────────────────────
STONE = (0.62, 0.60, 0.56, 1.0)
STONE_DARK = (0.42, 0.40, 0.38, 1.0)
ROOF_RED = (0.55, 0.22, 0.18, 1.0)
ROOF_SLATE = (0.26, 0.28, 0.34, 1.0)
WOOD = (0.50, 0.34, 0.20, 1.0)
BARK = (0.45, 0.30, 0.15, 1.0)
CANOPY = (0.20, 0.50, 0.20, 1.0)
CONIFER = (0.10, 0.28, 0.10, 1.0)
CANVAS = (0.82, 0.74, 0.56, 1.0)
METAL = (0.30, 0.30, 0.32, 1.0)
WINDOW_GLOW = (1.00, 0.85, 0.55, 1.0)
FIRE = (1.00, 0.55, 0.15, 1.0)
HALO_GOLD = (1.00, 0.83, 0.42, 1.0)
FALLBACK_MAGENTA = (0.85, 0.25, 0.85, 1.0)
WHITE = (1.0, 1.0, 1.0, 1.0)
BLACK = (0.0, 0.0, 0.0, 1.0)
