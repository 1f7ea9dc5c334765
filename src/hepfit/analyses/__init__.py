"""
Scripted analyses: the dimuon spectrum, generate-and-fit demonstrations and
the batch mode comparison.
"""
