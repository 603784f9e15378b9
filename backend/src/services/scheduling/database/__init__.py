# Database layer for the Scheduling Engine: models, store, typed operations
