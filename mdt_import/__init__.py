"""MDT patient spreadsheet import."""
