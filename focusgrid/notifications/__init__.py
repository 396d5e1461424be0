"""Due-task reminders: scanner, dispatcher and push transport."""
