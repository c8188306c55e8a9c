"""Asteroid Shadow Engine: Core Package.

Ray casting, BVH acceleration, face-to-face visibility graphs, self-shadowing
illumination and binary-body eclipse detection for polyhedral asteroid
shape models.
"""
