"""Tezeus CRM backend: pipeline cards, conversation assignment and realtime board sync."""
