#!/usr/bin/env python3
from __future__ import annotations
import re
from pathlib import Path
import pandas as pd
import geopandas as gpd

SUPPORTED_GEO = (".shp", ".gpkg", ".geojson", ".json", ".parquet", ".pq")

def mkdir_p(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

def stdcols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [
        re.sub(r"_{2,}", "_", re.sub(r"[^\w]+", "_", str(c).strip().lower())).strip("_")
        for c in df.columns
    ]
    return df

def is_geodf(obj) -> bool:
    return isinstance(obj, gpd.GeoDataFrame)

def read_any(path: Path) -> pd.DataFrame:
    path = Path(path)
    ext = path.suffix.lower()
    if ext in (".parquet", ".pq"):
        # could be GeoParquet or regular Parquet
        try:
            return gpd.read_parquet(path)
        except ValueError:
            return pd.read_parquet(path)
    if ext == ".csv":
        return pd.read_csv(path, dtype=str)
    if ext == ".tsv":
        return pd.read_csv(path, sep="\t", dtype=str)
    if ext == ".txt":
        return pd.read_csv(path, sep=None, engine="python", dtype=str)
    if ext in SUPPORTED_GEO:
        return gpd.read_file(path)
    raise ValueError(f"Unsupported input file type: {path}")

def read_geo(path: Path) -> gpd.GeoDataFrame:
    obj = read_any(path)
    if not is_geodf(obj):
        raise ValueError(f"{path} does not contain geometries.")
    return ensure_crs(stdcols(obj))

def ensure_crs(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    if gdf.crs is None:
        raise ValueError("GeoDataFrame has no CRS. Please set CRS on input data.")
    return gdf

def assert_projected_planar(gdf: gpd.GeoDataFrame, name: str) -> None:
    crs = gdf.crs
    if crs is None:
        raise ValueError(f"{name}: GeoDataFrame has no CRS; reproject to a projected CRS first.")
    if crs.is_geographic:
        raise ValueError(f"{name} is in a geographic CRS. Reproject to a projected CRS before area computations.")

def to_planar(gdf: gpd.GeoDataFrame, area_crs: str) -> gpd.GeoDataFrame:
    """Reproject to `area_crs` only when the input is geographic."""
    ensure_crs(gdf)
    if gdf.crs.is_geographic:
        return gdf.to_crs(area_crs)
    return gdf

def write_parquet(df: pd.DataFrame, path: Path) -> None:
    mkdir_p(path.parent)
    df.to_parquet(path, index=False)
