"""Outbound webhook delivery for funnel, stage and opportunity events."""
