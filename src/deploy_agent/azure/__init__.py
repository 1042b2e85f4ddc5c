"""Azure REST clients: ARM (Static Web Apps) and Blob storage."""
