"""Domain layer: value objects, the ParkingLot aggregate and pricing rules"""
