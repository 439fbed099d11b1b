import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file if it exists
load_dotenv()

# Paths
PROJ_ROOT = Path(__file__).resolve().parents[1]
logger.info(f"PROJ_ROOT path is: {PROJ_ROOT}")

DATA_DIR = Path(os.getenv("PRECINCT_CAR_DATA_DIR", PROJ_ROOT / "data"))
RAW_DATA_DIR = DATA_DIR / "raw"
INTERIM_DATA_DIR = DATA_DIR / "interim"
PROCESSED_DATA_DIR = DATA_DIR / "processed"

ELECTION_RESULTS_CSV = RAW_DATA_DIR / "election_results.csv"
PRECINCT_SHP_FILE = RAW_DATA_DIR / "precincts" / "precincts.shp"

ACS_BLOCK_GROUP_CSV = RAW_DATA_DIR / "acs_block_groups.csv"
BLOCK_GROUP_SHP_FILE = RAW_DATA_DIR / "block_groups" / "block_groups.shp"

CLEAN_RETURNS = INTERIM_DATA_DIR / "precinct_returns.parquet"
CLEAN_PRECINCT_GEO = INTERIM_DATA_DIR / "precincts_geo.parquet"
CLEAN_BLOCK_GROUPS = INTERIM_DATA_DIR / "block_groups.parquet"

OUTCOME_RECORDS = PROCESSED_DATA_DIR / "outcome_records.parquet"
ADJACENCY_EDGES = PROCESSED_DATA_DIR / "adjacency_edges.parquet"
EXCLUDED_UNITS = PROCESSED_DATA_DIR / "excluded_units.parquet"
QUALITY_EVENTS = INTERIM_DATA_DIR / "quality_events.parquet"
RESULTS_DB = PROCESSED_DATA_DIR / "results.duckdb"

# Equal-area CRS for centroids, shared-border lengths and overlay areas
AREA_CRS = os.getenv("PRECINCT_CAR_AREA_CRS", "EPSG:5070")

# If tqdm is installed, configure loguru with tqdm.write
# https://github.com/Delgan/loguru/issues/135
try:
    from tqdm import tqdm

    logger.remove(0)
    logger.add(lambda msg: tqdm.write(msg, end=""), colorize=True)
except ModuleNotFoundError:
    pass
