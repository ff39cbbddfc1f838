"""Parking-spot lottery engine with persistence, publishing and export."""
