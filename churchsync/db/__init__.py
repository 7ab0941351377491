"""Record store enums and table/field names."""
