from __future__ import annotations
import pandas as pd

def normalize_unit_key(raw: pd.Series, numeric_width: int = 4) -> pd.Series:
    """
    Join key for precinct names shared by the results table and the boundary file.

      "Precinct 0012 " -> "0012"
      "pct 12"         -> "0012"
      "Mt. Vernon  #3" -> "MT VERNON 3"
    """
    s = raw.astype("string").str.strip().str.upper()
    s = s.str.replace(r"^(PRECINCT|PCT|PREC)\.?\s+", "", regex=True)
    s = s.str.replace(r"[^A-Z0-9]+", " ", regex=True).str.strip()
    s = s.str.replace(r"\s{2,}", " ", regex=True)
    numeric = s.str.fullmatch(r"\d+").fillna(False)
    s = s.mask(numeric, s.str.zfill(numeric_width))
    return s.where(s.str.len() > 0, pd.NA)
