"""Client-side chat model: contact list, live-event reducer and uploads."""
