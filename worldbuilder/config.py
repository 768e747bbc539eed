import os
import pathlib

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = pathlib.Path(__file__).parent.parent.absolute()

ASSET_BASE_URL = os.environ.get("WORLDBUILDER_ASSET_BASE_URL", "http://127.0.0.1:9333")
FETCH_TIMEOUT = float(os.environ.get("WORLDBUILDER_FETCH_TIMEOUT", "30"))
ASSET_DIR = pathlib.Path(os.environ.get("WORLDBUILDER_ASSET_DIR", str(BASE_DIR / "assets")))
OUTPUT_DIR = pathlib.Path(os.environ.get("WORLDBUILDER_OUTPUT_DIR", str(BASE_DIR / "output")))

# Avatar meshes come out of OpenSCAD (Z-up); set WORLDBUILDER_STL_Z_UP=0 for Y-up sources
STL_Z_UP = os.environ.get("WORLDBUILDER_STL_Z_UP", "1").strip().lower() not in ("0", "false", "no")
