VERSION = "0.1.0"

# Version of the persisted data layout. Bump together with a migration in
# focustm.migration when the FocusData document changes shape.
APP_SCHEMA_VERSION = "0.2.0"
