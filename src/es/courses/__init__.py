"""Classification and field extraction of order line items into course records."""
