"""
Geospatial operations on resolved catalog assets.

This module contains:
- Asset URL materialization (signing, GDAL virtual filesystem rewriting)
- Raster extraction (point sampling, zonal statistics)
- Coverage-weighted statistics
"""
