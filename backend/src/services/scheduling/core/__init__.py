# Core scheduling logic: errors, utilities, lifecycle, conflicts, recurrence, aggregation
