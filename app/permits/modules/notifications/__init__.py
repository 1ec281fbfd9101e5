"""In-app notifications (with best-effort e-mail copies)."""
