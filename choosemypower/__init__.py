"""ChooseMyPower ZIP routing, plan cache and navigation analytics service"""
