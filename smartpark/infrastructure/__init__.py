"""Infrastructure layer: storage backends and event messaging"""
